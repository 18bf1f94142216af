from flask_sqlalchemy import SQLAlchemy

from nailsalon.models import Base

db = SQLAlchemy(model_class=Base)
