"""Collaborator implementations registered in the PluginRegistry."""
