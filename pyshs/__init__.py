"""An HTTP file server library: listings, uploads, share links, clipboard, ACLs and TLS."""

__version__ = "1.1.0"