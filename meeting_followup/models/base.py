"""
Declarative base shared by all pipeline tables.
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
