from rest_framework import serializers

from .models import Project, Tower, Unit, UnitStatusHistory


class ProjectSerializer(serializers.ModelSerializer):
    developer_name = serializers.SerializerMethodField()

    class Meta:
        model = Project
        fields = [
            "id", "name", "location", "description",
            "developer", "developer_name",
            "total_units", "available_units", "blocked_units", "sold_units",
            "base_price", "status", "possession_date",
            "created_at", "updated_at",
        ]
        # counts are derived from unit rows, developer comes from the request user
        read_only_fields = [
            "id", "developer", "available_units", "blocked_units", "sold_units",
            "created_at", "updated_at",
        ]

    def get_developer_name(self, obj):
        return str(obj.developer) if obj.developer_id else None

    def validate_total_units(self, value):
        if self.instance is not None:
            existing = self.instance.units.count()
            if value and value < existing:
                raise serializers.ValidationError(
                    f"Project already has {existing} units."
                )
        return value


class TowerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Tower
        fields = ["id", "project", "name", "floors", "units_per_floor", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate(self, data):
        project = data.get("project") or getattr(self.instance, "project", None)
        name = data.get("name") or getattr(self.instance, "name", None)
        if project and name:
            qs = Tower.objects.filter(project=project, name=name)
            if self.instance is not None:
                qs = qs.exclude(pk=self.instance.pk)
            if qs.exists():
                raise serializers.ValidationError({"name": "Tower with this name already exists in the project."})
        return data


class UnitSerializer(serializers.ModelSerializer):
    project_name = serializers.CharField(source="project.name", read_only=True)
    tower_name = serializers.CharField(source="tower.name", read_only=True)

    class Meta:
        model = Unit
        fields = [
            "id", "project", "project_name", "tower", "tower_name",
            "unit_number", "floor", "property_type", "size",
            "base_rate", "plc", "gst", "stamp_duty", "total_price",
            "status", "view", "facing",
            "blocked_at", "block_expiry_at", "blocked_by",
            "created_at", "updated_at",
        ]
        # status only moves through the lifecycle actions; total_price is always recomputed
        read_only_fields = [
            "id", "project", "total_price", "status",
            "blocked_at", "block_expiry_at", "blocked_by",
            "created_at", "updated_at",
        ]
        # uniqueness is checked in validate() so errors are reported per field
        validators = []

    def validate(self, data):
        tower = data.get("tower") or getattr(self.instance, "tower", None)
        unit_number = data.get("unit_number") or getattr(self.instance, "unit_number", None)

        if tower is None:
            raise serializers.ValidationError({"tower": "This field is required."})

        qs = Unit.objects.filter(tower=tower, unit_number=unit_number)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError(
                {"unit_number": f"Unit {unit_number} already exists in {tower.name}."}
            )

        if tower.floors and "floor" in data and data["floor"] > tower.floors:
            raise serializers.ValidationError(
                {"floor": f"{tower.name} has only {tower.floors} floors."}
            )

        moving = self.instance is None or self.instance.tower.project_id != tower.project_id
        project = tower.project
        if moving and project.total_units and project.units.count() >= project.total_units:
            raise serializers.ValidationError(
                f"Project {project.name} already has all {project.total_units} units."
            )
        return data

    def create(self, validated_data):
        unit = super().create(validated_data)
        Project.refresh_unit_counts(unit.project_id)
        return unit

    def update(self, instance, validated_data):
        old_project_id = instance.project_id
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        # never write status / block fields from a possibly stale instance
        instance.save(update_fields=list(validated_data.keys()))

        if old_project_id != instance.project_id:
            Project.refresh_unit_counts(old_project_id)
            Project.refresh_unit_counts(instance.project_id)
        return instance


class UnitStatusHistorySerializer(serializers.ModelSerializer):
    changed_by_name = serializers.SerializerMethodField()

    class Meta:
        model = UnitStatusHistory
        fields = ["id", "old_status", "new_status", "reason", "changed_by", "changed_by_name", "created_at"]

    def get_changed_by_name(self, obj):
        return str(obj.changed_by) if obj.changed_by_id else None


class UnitBlockSerializer(serializers.Serializer):
    hours = serializers.IntegerField(required=False, min_value=0, max_value=24 * 90)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=200)


class UnitTransitionSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=200)


class UnitImportSerializer(serializers.Serializer):
    file = serializers.FileField()
