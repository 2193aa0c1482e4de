"""AI course recommendations for learners."""
