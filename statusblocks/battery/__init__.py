"""The battery block and its sysfs and apcupsd device drivers."""