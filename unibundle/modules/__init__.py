# unibundle/modules/__init__.py
