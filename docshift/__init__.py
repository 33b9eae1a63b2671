"""Docshift: layout-preserving translation of Word and PowerPoint documents."""
