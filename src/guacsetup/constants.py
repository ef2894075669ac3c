"""Fixed paths, modes and upstream locations."""

DIR_MODE = 0o755
FILE_MODE = 0o644
SCRIPT_MODE = 0o755
SECRET_FILE_MODE = 0o600
PROPERTIES_FILE_MODE = 0o640

GUACAMOLE_INDEX_URL = "https://downloads.apache.org/guacamole/"
TOMCAT_INDEX_URL = "https://dlcdn.apache.org/tomcat/tomcat-9/"

# One capture group per pattern: the candidate version string.
GUACAMOLE_VERSION_PATTERN = r'href="([^"/]+)/"'
TOMCAT_VERSION_PATTERN = r'href="v([^"/]+)/"'

GUAC_HOME = "/etc/guacamole"
TOMCAT_HOME = "/opt/apache-guacamole/tomcat9"
TOMCAT_SERVICE = "tomcat9"
SERVICE_USER = "tomcat"
DATABASE_SERVICE = "mariadb"

DATABASE_NAME = "guacamole_db"
DATABASE_USER = "guacamole_user"

CREDENTIALS_FILE = "~/guacamole.creds"
STATE_FILE = "/var/lib/guacsetup/state.json"
CONFIG_FILE = "/etc/guacsetup/config.yml"
UNIT_DIR = "/etc/systemd/system"
UPDATE_COMMAND_PATH = "/usr/local/sbin/guacamole-update"

JDBC_DRIVER_PATH = "/usr/share/java/mariadb-java-client.jar"
DEFAULT_JAVA_HOME = "/usr/lib/jvm/java-21-openjdk-amd64"

GUACD_PACKAGE_CANDIDATES = ("guacd", "guacamole-server")
BASE_PACKAGES = (
    "ca-certificates",
    "curl",
    "jq",
    "mariadb-server",
    "mariadb-client",
    "openjdk-21-jdk-headless",
    "libmariadb-java",
    "unzip",
)

APPLICATION_FILENAME = "guacamole.war"
PLUGIN_GLOB = "guacamole-auth-jdbc-mysql-*.jar"
RUNTIME_VERSION_MARKER = ".guacsetup-runtime-version"
