"""Tests for :mod:`collab_users`."""
