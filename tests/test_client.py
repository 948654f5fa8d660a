"""Tests for the brewlog command line client"""

import json
import os
import threading
from http.client import HTTPConnection
from http.server import HTTPServer
from unittest.mock import MagicMock

import click
import pytest
import requests
from click.testing import CliRunner

from brewlog import client as brewlog_client
from brewlog.client import BrewlogClient, ApiError, _CallbackHandler, cli, wait_for_callback


def make_response(status_code=200, payload=None, reason='OK'):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.content = json.dumps(payload).encode() if payload is not None else b''
    response.json.return_value = payload
    return response


@pytest.fixture
def credentials_file(tmp_path, mocker):
    path = tmp_path / 'brewlog' / 'credentials.json'
    mocker.patch('brewlog.client.credentials_path', return_value=str(path))
    return path


@pytest.fixture
def http(mocker):
    return mocker.patch.object(requests.Session, 'request', return_value=make_response(payload={}))


@pytest.fixture
def cli_runner(credentials_file):
    return CliRunner(env={'BREWLOG_SERVER': None, 'BREWLOG_TOKEN': None})


def test_request_sends_bearer_token(http):
    http.return_value = make_response(payload={'kind': 'bearer'})
    api = BrewlogClient('http://brew.example/', token='secret')

    assert api.get('/api/me') == {'kind': 'bearer'}

    args, kwargs = http.call_args
    assert args == ('GET', 'http://brew.example/api/me')
    assert kwargs['headers'] == {'Authorization': 'Bearer secret'}
    assert kwargs['timeout'] == 10


def test_anonymous_request_has_no_authorization(http):
    BrewlogClient('http://brew.example').get('/api/roasters', country=None)

    kwargs = http.call_args.kwargs
    assert kwargs['headers'] == {}
    assert kwargs['params'] == {}


def test_error_response_raises_api_error(http):
    http.return_value = make_response(401, {'error': 'authentication failed'}, reason='UNAUTHORIZED')

    with pytest.raises(ApiError) as excinfo:
        BrewlogClient('http://brew.example').post('/api/roasters', {'name': 'x'})

    assert excinfo.value.status_code == 401
    assert 'authentication failed' in excinfo.value.message


def test_no_content_returns_none(http):
    http.return_value = make_response(204)
    assert BrewlogClient('http://brew.example', token='t').delete('/api/roasters/1') is None


def test_unreachable_server(http):
    http.side_effect = requests.ConnectionError('refused')
    with pytest.raises(click.ClickException, match='could not reach http://brew.example'):
        BrewlogClient('http://brew.example').get('/api/roasters')


def test_login_url_carries_callback_and_state():
    url = BrewlogClient('http://brew.example').login_url('http://127.0.0.1:5000/callback', 'abc', 'cli')
    assert url.startswith('http://brew.example/login?')
    assert 'cli_callback=http%3A%2F%2F127.0.0.1%3A5000%2Fcallback' in url
    assert 'state=abc' in url


def test_credentials_round_trip(credentials_file):
    assert brewlog_client.load_credentials() == {}

    brewlog_client.save_credentials('http://brew.example', 'secret')

    assert brewlog_client.load_credentials() == {'server': 'http://brew.example', 'token': 'secret'}
    assert os.stat(credentials_file).st_mode & 0o777 == 0o600
    assert brewlog_client.clear_credentials() is True
    assert brewlog_client.clear_credentials() is False


def test_login_stores_token(cli_runner, credentials_file, mocker):
    listener = MagicMock(server_address=('127.0.0.1', 5555))
    mocker.patch('brewlog.client.HTTPServer', return_value=listener)
    browser = mocker.patch('brewlog.client.webbrowser.open')
    mocker.patch('brewlog.client.secrets.token_urlsafe', return_value='state-123')
    mocker.patch('brewlog.client.wait_for_callback', return_value={'token': 'new-token', 'state': 'state-123'})

    result = cli_runner.invoke(cli, ['--server', 'http://brew.example', 'login'])

    assert result.exit_code == 0, result.output
    opened = browser.call_args.args[0]
    assert 'cli_callback=http%3A%2F%2F127.0.0.1%3A5555%2Fcallback' in opened
    assert 'state=state-123' in opened
    assert json.loads(credentials_file.read_text()) == {'server': 'http://brew.example', 'token': 'new-token'}


def test_login_rejects_wrong_state(cli_runner, credentials_file, mocker):
    mocker.patch('brewlog.client.HTTPServer', return_value=MagicMock(server_address=('127.0.0.1', 5555)))
    mocker.patch('brewlog.client.secrets.token_urlsafe', return_value='state-123')
    mocker.patch('brewlog.client.wait_for_callback', return_value={'token': 'stolen', 'state': 'other'})

    result = cli_runner.invoke(cli, ['login', '--no-browser'])

    assert result.exit_code == 1
    assert 'state did not match' in result.output
    assert not credentials_file.exists()


def test_login_times_out(cli_runner, credentials_file, mocker):
    mocker.patch('brewlog.client.HTTPServer', return_value=MagicMock(server_address=('127.0.0.1', 5555)))
    mocker.patch('brewlog.client.wait_for_callback', return_value=None)

    result = cli_runner.invoke(cli, ['login', '--no-browser'])

    assert result.exit_code == 1
    assert 'timed out' in result.output


def test_logout_removes_credentials(cli_runner, credentials_file):
    brewlog_client.save_credentials('http://brew.example', 'secret')

    assert 'removed' in cli_runner.invoke(cli, ['logout']).output
    assert 'No stored credentials' in cli_runner.invoke(cli, ['logout']).output


def test_stored_credentials_are_used(cli_runner, credentials_file, http):
    brewlog_client.save_credentials('http://brew.example', 'stored-token')
    http.return_value = make_response(payload={'kind': 'bearer', 'user': {'username': 'alice'}})

    result = cli_runner.invoke(cli, ['whoami'])

    assert result.exit_code == 0
    assert '"username": "alice"' in result.output
    args, kwargs = http.call_args
    assert args[1] == 'http://brew.example/api/me'
    assert kwargs['headers']['Authorization'] == 'Bearer stored-token'


def test_token_option_overrides_stored(cli_runner, credentials_file, http):
    brewlog_client.save_credentials('http://brew.example', 'stored-token')

    cli_runner.invoke(cli, ['--token', 'explicit', 'whoami'])

    assert http.call_args.kwargs['headers']['Authorization'] == 'Bearer explicit'


def test_tokens_commands(cli_runner, credentials_file, http):
    http.return_value = make_response(payload={'tokens': [
        {'id': 1, 'name': 'cli', 'revoked_at': None, 'last_used_at': None},
        {'id': 2, 'name': 'old', 'revoked_at': '2026-01-01T00:00:00', 'last_used_at': None},
    ]})
    listed = cli_runner.invoke(cli, ['tokens', 'list'])
    assert '1\tcli\tactive' in listed.output
    assert '2\told\trevoked' in listed.output

    http.return_value = make_response(201, {'id': 3, 'name': 'ci', 'token': 'fresh-secret'})
    created = cli_runner.invoke(cli, ['tokens', 'create', 'ci'])
    assert created.output.strip() == 'fresh-secret'
    assert http.call_args.kwargs['json'] == {'name': 'ci'}

    http.return_value = make_response(payload={'id': 3})
    assert 'Token 3 revoked' in cli_runner.invoke(cli, ['tokens', 'revoke', '3']).output
    assert http.call_args.args[1].endswith('/api/tokens/3/revoke')


def test_roasters_add_skips_empty_fields(cli_runner, credentials_file, http):
    http.return_value = make_response(201, {'id': 1, 'slug': 'square-mile'})

    result = cli_runner.invoke(cli, ['roasters', 'add', '--name', 'Square Mile', '--country', 'UK'])

    assert result.exit_code == 0
    assert http.call_args.kwargs['json'] == {'name': 'Square Mile', 'country': 'UK'}


def test_roasts_add_collects_notes(cli_runner, credentials_file, http):
    http.return_value = make_response(201, {'id': 4})

    cli_runner.invoke(cli, ['roasts', 'add', '--roaster-id', '1', '--name', 'Red Brick',
                            '--note', 'chocolate', '--note', 'plum'])

    assert http.call_args.kwargs['json'] == {
        'roaster_id': 1, 'name': 'Red Brick', 'tasting_notes': ['chocolate', 'plum'],
    }


def test_bags_list_open_only(cli_runner, credentials_file, http):
    http.return_value = make_response(payload={'bags': [
        {'id': 2, 'roast_name': 'Red Brick', 'remaining': 235.0, 'amount': 250.0},
    ]})

    result = cli_runner.invoke(cli, ['bags', 'list', '--open'])

    assert '2\tRed Brick\t235/250g' in result.output
    assert http.call_args.kwargs['params'] == {'closed': 'false'}


def test_brews_add_sends_notes(cli_runner, credentials_file, http):
    http.return_value = make_response(201, {'id': 9})

    result = cli_runner.invoke(cli, ['brews', 'add', '--bag-id', '2', '--coffee', '15', '--water', '250',
                                     '--temp', '94', '--grind', '12', '--note', 'too-fast'])

    assert result.exit_code == 0, result.output
    assert http.call_args.kwargs['json'] == {
        'bag_id': 2, 'coffee_weight': 15.0, 'water_volume': 250, 'water_temp': 94.0,
        'grind_setting': 12.0, 'quick_notes': ['too-fast'],
    }


def test_bags_finish(cli_runner, credentials_file, http):
    assert 'Bag 2 finished' in cli_runner.invoke(cli, ['bags', 'finish', '2']).output
    assert http.call_args.args == ('POST', 'http://localhost:8000/api/bags/2/finish')


def test_api_error_exits_non_zero(cli_runner, credentials_file, http):
    http.return_value = make_response(401, {'error': 'authentication failed'}, reason='UNAUTHORIZED')

    result = cli_runner.invoke(cli, ['roasters', 'delete', '1'])

    assert result.exit_code == 1
    assert 'authentication failed (HTTP 401)' in result.output


def test_timeline_command(cli_runner, credentials_file, http):
    http.return_value = make_response(payload={'events': [
        {'occurred_at': '2026-10-01T09:00:00', 'entity_type': 'roast', 'action': 'added', 'title': 'Red Brick'},
    ], 'page': 1, 'per_page': 20, 'total': 1})

    result = cli_runner.invoke(cli, ['timeline', '--per-page', '5'])

    assert 'roast\tadded\tRed Brick' in result.output
    assert http.call_args.kwargs['params'] == {'page': 1, 'per_page': 5}


def test_wait_for_callback_captures_token():
    listener = HTTPServer(('127.0.0.1', 0), _CallbackHandler)

    def follow_redirect():
        connection = HTTPConnection('127.0.0.1', listener.server_address[1], timeout=5)
        connection.request('GET', '/callback?token=abc&state=xyz')
        connection.getresponse().read()
        connection.close()

    browser = threading.Thread(target=follow_redirect)
    browser.start()

    result = wait_for_callback(listener, timeout=10)
    browser.join()

    assert result == {'token': 'abc', 'state': 'xyz'}
