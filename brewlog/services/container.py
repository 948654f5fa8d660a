"""Service container for dependency injection."""

import logging
from typing import Dict, Any

from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'brewlog_services'


class ServiceContainer:
    """Container for application services, built lazily on first use."""

    def __init__(self):
        self._services: Dict[str, Any] = {}

    def register(self, name: str, service: Any) -> None:
        """Register a service in the container.

        Args:
            name: Name of the service
            service: The service instance
        """
        self._services[name] = service

    def get(self, name: str) -> Any:
        """Get a service from the container by name.

        Args:
            name: Name of the service

        Returns:
            The service instance

        Raises:
            KeyError: no service of that name exists
        """
        if name in self._services:
            return self._services[name]

        init_method = getattr(self, f"_init_{name}", None)
        if init_method is None:
            raise KeyError(f"unknown service {name}")
        service = init_method()
        self._services[name] = service
        logger.debug("created service %s", name)
        return service

    def _init_user_repository(self):
        from brewlog.models.user_repository import SqlAlchemyUserRepository
        from brewlog.extensions import db
        return SqlAlchemyUserRepository(db)

    def _init_session_repository(self):
        from brewlog.models.user_repository import SqlAlchemySessionRepository
        from brewlog.extensions import db
        return SqlAlchemySessionRepository(db)

    def _init_token_repository(self):
        from brewlog.models.token_repository import SqlAlchemyTokenRepository
        from brewlog.extensions import db
        return SqlAlchemyTokenRepository(db)

    def _init_registration_token_repository(self):
        from brewlog.models.token_repository import SqlAlchemyRegistrationTokenRepository
        from brewlog.extensions import db
        return SqlAlchemyRegistrationTokenRepository(db)

    def _init_passkey_repository(self):
        from brewlog.models.passkey_repository import SqlAlchemyPasskeyRepository
        from brewlog.extensions import db
        return SqlAlchemyPasskeyRepository(db)

    def _init_challenge_repository(self):
        from brewlog.models.challenge_repository import SqlAlchemyChallengeRepository
        from brewlog.extensions import db
        return SqlAlchemyChallengeRepository(db)

    def _init_roaster_repository(self):
        from brewlog.models.coffee_repository import SqlAlchemyRoasterRepository
        from brewlog.extensions import db
        return SqlAlchemyRoasterRepository(db)

    def _init_roast_repository(self):
        from brewlog.models.coffee_repository import SqlAlchemyRoastRepository
        from brewlog.extensions import db
        return SqlAlchemyRoastRepository(db)

    def _init_bag_repository(self):
        from brewlog.models.coffee_repository import SqlAlchemyBagRepository
        from brewlog.extensions import db
        return SqlAlchemyBagRepository(db)

    def _init_brew_repository(self):
        from brewlog.models.coffee_repository import SqlAlchemyBrewRepository
        from brewlog.extensions import db
        return SqlAlchemyBrewRepository(db)

    def _init_timeline_repository(self):
        from brewlog.models.coffee_repository import SqlAlchemyTimelineRepository
        from brewlog.extensions import db
        return SqlAlchemyTimelineRepository(db)

    def _init_token_service(self):
        """Initialize the token service."""
        from brewlog.services.token_service import TokenService
        return TokenService(
            self.get('token_repository'),
            self.get('session_repository'),
            self.get('registration_token_repository'),
            self.get('user_repository'),
        )

    def _init_passkey_service(self):
        """Initialize the passkey service."""
        from brewlog.services.passkey_service import PasskeyService
        return PasskeyService(
            self.get('user_repository'),
            self.get('passkey_repository'),
            self.get('challenge_repository'),
            self.get('token_service'),
            self.get('registration_token_repository'),
        )


def container_for(app):
    """The container attached to ``app``, created on first access."""
    if EXTENSION_KEY not in app.extensions:
        app.extensions[EXTENSION_KEY] = ServiceContainer()
    return app.extensions[EXTENSION_KEY]


def container():
    """Get the service container of the current application.

    Returns:
        ServiceContainer: The service container instance
    """
    return container_for(current_app._get_current_object())
