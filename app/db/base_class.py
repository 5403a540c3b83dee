from sqlalchemy.orm import declarative_base

# Shared declarative base; every model module registers its tables here
Base = declarative_base()
