"""Pre-tests, final assessments and lesson quizzes."""
