"""Tool management engine: process execution, probing, installs and the manager facade."""
