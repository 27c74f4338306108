"""Deployment and launch of minicap/minitouch onto devices."""
