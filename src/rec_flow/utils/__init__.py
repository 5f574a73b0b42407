"""Utility modules for RecFlow."""

from .checkpoint_tracker import CheckpointTracker
from .json_utils import safe_json_dumps, to_json_dict
from .text import tokenize, extract_keywords, levenshtein, title_distance, title_similarity
