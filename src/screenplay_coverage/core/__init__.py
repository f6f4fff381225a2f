"""Core data types shared by the router and the pipeline."""
