# Overview: Flask extension instances for database, migrations and the order change feed.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .change_feed import ChangeFeedHub

db = SQLAlchemy()
migrate = Migrate()
change_feed = ChangeFeedHub()
