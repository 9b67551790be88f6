"""
ClinicFlow - Application Entry Point
"""

import logging
import os

from app import create_app

logger = logging.getLogger(__name__)

env = os.environ.get("FLASK_ENV", "development")
app = create_app(env)

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    logger.info(f"ClinicFlow API listening on port {port}")
    app.run(host="0.0.0.0", port=port, debug=(env == "development"))
