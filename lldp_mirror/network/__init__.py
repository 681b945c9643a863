"""Traffic-control plumbing: command execution, filter readers, probing."""
