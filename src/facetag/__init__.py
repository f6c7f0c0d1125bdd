"""facetag: face-recognition analysis of childcare class videos."""
