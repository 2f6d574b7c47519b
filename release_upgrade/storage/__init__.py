"""Storage primitives: commands, mounts, exclusion lists, tree copies, fetches."""
