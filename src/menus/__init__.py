"""Menus, items, reviews and the public QR menu."""
