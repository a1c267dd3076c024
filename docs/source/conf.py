# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html
import os
import sys
from datetime import date

import numpydoc.docscrape as np_docscrape

sys.path.append(os.path.abspath("../../src"))

# -- Project information -----------------------------------------------------

project = "ekical"
copyright = f"{date.today().year}, ekical developers"
author = "ekical developers"


# -- General configuration ---------------------------------------------------

nitpicky = True

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    # links to other project's documentation
    "sphinx.ext.intersphinx",
    # numpy style docstring parser
    "numpydoc",
    # links to project code
    "sphinx.ext.viewcode",
    # copy button in the code cells
    "sphinx_copybutton",
]

intersphinx_mapping = {
    "python": ("https://docs.python.org/3/", None),
    "numpy": ("https://numpy.org/devdocs", None),
    "scipy": ("https://docs.scipy.org/doc/scipy", None),
}

add_function_parentheses = False

# Do not show type hints in function signature
autodoc_typehints = "none"

autosummary_generate = True

numpydoc_class_members_toctree = False

np_docscrape.ClassDoc.extra_public_methods = [
    "__call__",
]

# The reST default role (used for this markup: `text`) to use for all documents.
default_role = "autolink"

# Do not copy prompts and outputs from code fragments
copybutton_exclude = ".linenos, .gp, .go"

exclude_patterns = []

# -- Options for HTML output -------------------------------------------------

html_theme = "pydata_sphinx_theme"
html_title = f"{project} documentation"

html_theme_options = {
    "navigation_with_keys": False,
}
