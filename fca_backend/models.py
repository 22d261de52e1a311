from flask_sqlalchemy import SQLAlchemy
from fca_shared.models import (
    Base, User, ApiToken, Project, Assessment, Photo, Deficiency, ComponentHistory, SyncReceipt
)

db = SQLAlchemy(model_class=Base)
