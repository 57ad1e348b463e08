# Sphinx configuration for the threadgraph API reference

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

from threadgraph import __version__  # noqa: E402

project = 'threadgraph'
copyright = '2024, threadgraph contributors'
author = 'threadgraph contributors'
version = '.'.join(__version__.split('.')[:2])
release = __version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

exclude_patterns = ['_build']
html_theme = 'sphinx_rtd_theme'

# Pydantic models document their fields; validators and config stay hidden
autodoc_default_options = {
    'members': True,
    'member-order': 'groupwise',
    'show-inheritance': True,
    'exclude-members': 'model_config,model_fields,model_computed_fields',
}
autodoc_typehints = 'description'
typehints_fully_qualified = False

napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}

nitpick_ignore = [
    ('py:class', 'threadgraph.store.Namespace'),
]
