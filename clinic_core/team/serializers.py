# clinic_core/team/serializers.py
from rest_framework import serializers

from clinic_core.team.capabilities import KNOWN_CAPABILITIES, capability_of
from clinic_core.team.models import TeamMember
from clinic_core.team.services import ROLE_CAPABILITY


class TeamMemberSerializer(serializers.ModelSerializer):
    display_name = serializers.SerializerMethodField()
    capabilities = serializers.SerializerMethodField()

    class Meta:
        model = TeamMember
        fields = [
            "id",
            "user_id",
            "display_name",
            "job_title",
            "specialty",
            "capabilities",
            "is_active",
            "is_available",
        ]
        read_only_fields = fields

    def get_display_name(self, obj) -> str:
        user = obj.user
        return user.get_full_name() or user.get_username()

    def get_capabilities(self, obj) -> list[str]:
        return sorted(capability_of(obj))


class TeamMemberQuerySerializer(serializers.Serializer):
    capability = serializers.ChoiceField(choices=sorted(KNOWN_CAPABILITIES), required=False)
    available = serializers.BooleanField(required=False, default=False)


class AssignSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=sorted(ROLE_CAPABILITY))
    team_member_id = serializers.UUIDField()
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class UnassignSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=sorted(ROLE_CAPABILITY))
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)
