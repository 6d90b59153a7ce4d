"""Basic constants for openidcore library."""
from datetime import timedelta

# Default Diffie-Hellman modulus and generator.
# Defined in OpenID specification http://openid.net/specs/openid-authentication-2_0.html#pvalue
DEFAULT_DH_MODULUS = ('ANz5OguIOXLsDhmYmsWizjEOHTdxfo2Vcbt2I3MYZuYe91ouJ4mLBX+YkcLiemOcPym2CBRYHNOyyjmG0mg3BVd9RcLn5S3I'
                      'HHoXGHblzqdLFEi/368Ygo79JRnxTkXjgmY0rxlJ5bU1zIKaSDuKdiI+XUkKJX8Fvf8W8vsixYOr')
DEFAULT_DH_GENERATOR = 'Ag=='

# Longest time a user may take to complete a single authentication.
MAX_AUTHENTICATION_TIME = timedelta(minutes=5)

# Lifetime of associations shared with relying parties.
SMART_ASSOCIATION_LIFETIME = timedelta(days=14)

NO_ENCRYPTION = 'no-encryption'
