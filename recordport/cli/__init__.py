"""Command line front end (``recordport`` / ``python -m recordport.cli``)."""
