"""PatchTester: test GitHub pull requests against a live working tree."""
