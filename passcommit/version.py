"""PassCommit Meta information.
   PassCommit keeps an end-to-end encrypted credential vault on the client.
"""
__title__ = 'passcommit'
__description__ = (
   'PassCommit keeps an end-to-end encrypted credential vault '
   'on the client.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 PassCommit Authors'
__author__ = 'PassCommit Authors'
__author_email__ = 'dev@passcommit.app'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/passcommit/passcommit'
