"""
Script to reset the database by recreating all tables
Run this after model changes, or to start again from the sample data.
WARNING: all existing data is deleted.
"""
import sys

from app import _seed_sample_data, create_app
from logging_config import get_logger
from models import db

logger = get_logger(__name__)


def reset_database(config_name=None, seed=True):
    app = create_app(config_name)
    with app.app_context():
        logger.warning("dropping_all_tables", database=app.config['SQLALCHEMY_DATABASE_URI'])
        db.drop_all()
        db.create_all()
        if seed:
            _seed_sample_data()
    logger.info("database_reset", seeded=seed)
    return app


if __name__ == '__main__':
    reset_database(seed='--no-seed' not in sys.argv[1:])
