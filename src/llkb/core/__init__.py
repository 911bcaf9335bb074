"""Configuration, errors and logging shared by every LLKB module."""
