"""Query understanding: turns free text into a structured backend query plan."""
