"""AI Roundtable -- classify a topic, ask several models, let them react to each other."""

__version__ = "0.1.0"
