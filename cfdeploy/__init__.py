"""
cfdeploy - CloudFormation deployment tool for repository-local templates.

This package provides the ``deploy`` CLI, which resolves a credential
profile, merges tags into a rendered template and creates, updates,
deletes or cancels the matching CloudFormation stack.
"""

__version__ = "0.1.0"
__author__ = "cfdeploy contributors"
