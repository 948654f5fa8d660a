"""
WSGI entry point for the application.

This file is used by Gunicorn to run the application in production.
"""

import logging

from brewlog import create_app

logger = logging.getLogger(__name__)

# Create the Flask application instance
app = create_app()

if __name__ == "__main__":
    # Run the application when executed directly (not through Gunicorn)
    host = app.config['HOST']
    port = app.config['PORT']

    logger.info(f"Starting application on {host}:{port}")
    app.run(host=host, port=port)
