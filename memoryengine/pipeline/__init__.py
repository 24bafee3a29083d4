"""Provider plumbing: embedding generation, LLM access, HTTP error mapping, retries."""
