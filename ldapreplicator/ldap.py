# This file is here so that we can patch the ldap module in our tests.
# Everything else in ldapreplicator imports python-ldap through this module,
# so patching ``ldapreplicator.ldap`` swaps the library out for the whole
# package.
import ldap
from ldap import *  # noqa: F403
from ldap import cidict, dn, ldapobject  # noqa: F401
from ldapurl import LDAPUrl  # noqa: F401

__version__ = ldap.__version__
