"""a11y_scout.crawler: URL admission, fetching and breadth-first traversal."""
