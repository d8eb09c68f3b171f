# Copyright (c) Syntropy Systems
"""codeduel command line interface."""
