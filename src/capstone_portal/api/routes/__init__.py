"""Route modules mounted by :func:`capstone_portal.api.main.create_app`."""
