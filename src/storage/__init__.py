"""Data store access for the deletion engine."""

from src.storage.interface import DataStore, FieldMatch, MatchPredicate, apply_patch
from src.storage.sql import SqlDataStore

__all__ = ["DataStore", "FieldMatch", "MatchPredicate", "SqlDataStore", "apply_patch"]
