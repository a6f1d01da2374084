# python-ldap-faker patches ``initialize`` on the modules named in a test's
# ``ldap_modules``, so every connection in this package is opened through
# this re-export rather than through ``ldap`` directly.
import ldap
from ldap import *  # noqa: F403

__version__ = ldap.__version__
