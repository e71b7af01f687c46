"""Analysis orchestration: review sampling, single-app processing and comparisons."""
