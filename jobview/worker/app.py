### jobview/worker/app.py

"""
Main Celery Application Configuration

Sets up the Celery application with Redis as broker and result backend and
discovers the export housekeeping tasks.
"""

# Third party imports
from celery import Celery

# Import all models to ensure they're registered with SQLAlchemy
# This must happen before any database operations in tasks
import jobview.applications.models  # noqa: F401
import jobview.exports.models  # noqa: F401

# Create Celery Instance
app = Celery("jobview_exports")

# Configure celery from separate config file
app.config_from_object("jobview.worker.config")

# Auto discover tasks.py files in the listed packages
app.autodiscover_tasks(["jobview.exports"])

if __name__ == "__main__":
    app.start()
