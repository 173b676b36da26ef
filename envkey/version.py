"""envkey Meta information.
   envkey keeps team secrets encrypted in a single file next to the source,
   readable by any team member's private key without a server.
"""
__title__ = 'envkey'
__description__ = (
   'Serverless secrets store: team-encrypted secrets in a single '
   'file kept alongside the source.'
)
__version__ = '0.2.0'
__copyright__ = 'Copyright (c) 2026 envkey authors'
__author__ = 'envkey authors'
__author_email__ = 'maintainers@envkey.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/envkey/envkey'
