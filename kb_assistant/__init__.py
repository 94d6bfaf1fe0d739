"""Knowledge-base assistant: corpus sync, retrieval and grounded answers."""
