"""Learning loop: normalization, matching, confidence, history and analytics."""
