#!/usr/bin/env python
"""
Entrypoint for the Sculptor HTTP service.

Serves resource recommendations over HTTP. The command line tool is
installed separately as ``sculptor``.

Usage:
    FLASK_ENV=development python run.py
    gunicorn -w 2 -b 0.0.0.0:8080 'run:app'
"""

import logging
import os

from sculptor.app import create_app

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    host = os.environ.get("SCULPTOR_HOST", "0.0.0.0")
    port = int(os.environ.get("SCULPTOR_PORT", "8080"))

    logger.info(f"Serving recommendations on {host}:{port}")
    app.run(host=host, port=port, debug=app.config["DEBUG"])
