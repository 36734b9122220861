"""Error types, key codec and HTTP value types shared by the agent."""
