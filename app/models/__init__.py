"""
Governance Signal Platform
SQLAlchemy extension instance shared by every model module.

The models are the read-side of the query collaborator: the signal engine
consumes their ``to_signal_dict()`` rows and never writes computed signals
back.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
