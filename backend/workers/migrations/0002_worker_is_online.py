from django.db import migrations, models


def copy_availability(apps, schema_editor):
    Worker = apps.get_model('workers', 'Worker')
    Worker.objects.filter(is_available=True).update(is_online=True)


class Migration(migrations.Migration):

    dependencies = [
        ('workers', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='worker',
            name='is_online',
            field=models.BooleanField(default=False),
        ),
        migrations.RunPython(copy_availability, migrations.RunPython.noop),
    ]
