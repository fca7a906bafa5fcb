from ehr_sync.config import Config
from ehr_sync.services.api.authenticators.authenticator import Authenticator
from ehr_sync.services.api.authenticators.null_authenticator import NullAuthenticator
from ehr_sync.services.api.authenticators.aws_v4_authenticator import AwsV4Authenticator
from ehr_sync.services.api.authenticators.oauth2_authenticator import OAuth2Authenticator


class AuthenticatorFactory:
    def __init__(self, config: Config) -> None:
        self.__config = config

    def create_authenticator(self) -> Authenticator:
        auth_type = self.__config.target_store.authentication

        match auth_type:
            case "off":
                return NullAuthenticator()
            case "oauth2":
                if self.__config.oauth2 is None:
                    raise ValueError(self.__error_message("oauth2"))

                return OAuth2Authenticator(
                    token_url=self.__config.oauth2.token_url,
                    client_id=self.__config.oauth2.client_id,
                    client_secret=self.__config.oauth2.client_secret,
                    scope=self.__config.oauth2.scope,
                )
            case "aws":
                if self.__config.aws is None:
                    raise ValueError(self.__error_message("aws"))
                return AwsV4Authenticator(
                    profile=self.__config.aws.profile,
                    region=self.__config.aws.region,
                )
            case _:
                raise ValueError(
                    "incorrect value for authenticator, supported types are 'aws', 'oauth2' or 'off'. Please fix in ehr_sync.conf"
                )

    def __error_message(self, auth_type: str) -> str:
        return f"[{auth_type}] section is required when target_store.authentication is '{auth_type}', please fix in ehr_sync.conf"
