"""Goal tracker API: goals, action trees, milestones and AI-assisted planning."""

__version__ = "0.1.0"
