"""lexmatch HTTP service, its client CLI and the compile worker."""
